# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Posterior analysis of fitted missinghe models.

This submodule turns sampler output into the objects users work with:

    - :py:mod:`~missinghe.model.results.postprocess` restores display names and
      derives the per-arm mean effects and costs from the draws.
    - :py:mod:`~missinghe.model.results.economics` builds the incremental analysis
      (increments, ICER draws, cost-effectiveness plane and acceptability curve).
    - :py:mod:`~missinghe.model.results.fit_result` holds the immutable
      :py:class:`~missinghe.model.results.fit_result.FitResult`.
    - :py:mod:`~missinghe.model.results.assessment` computes WAIC, LOOIC and DIC.
"""

from missinghe.model.results.assessment import InformationCriterion, pic
from missinghe.model.results.economics import EconomicEvaluation
from missinghe.model.results.fit_result import FitResult
