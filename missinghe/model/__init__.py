# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.


"""Model construction and fitting for missinghe.

A fit runs through the same stages for every model family:

    1. **Configuration**: the arguments of the entry point are parsed and validated
       into an immutable :py:class:`~missinghe.model.config.ModelConfig`.
    2. **Priors**: user overrides are merged over the defaults of the roles the
       configuration uses (:py:mod:`~missinghe.model.priors`).
    3. **Binding**: the dataset is turned into design matrices, outcome arrays, and
       index sets (:py:mod:`~missinghe.model.binder`).
    4. **Compilation**: an assumption-specific Stan program is generated
       (:py:mod:`~missinghe.model.stan`).
    5. **Sampling**: the program is run with CmdStan, or with any sampler function
       of the same signature.
    6. **Post-processing**: the draws are packaged into a
       :py:class:`~missinghe.model.results.fit_result.FitResult`.

The entry points are :py:func:`~missinghe.model.fit.selection`,
:py:func:`~missinghe.model.fit.pattern`, and :py:func:`~missinghe.model.fit.hurdle`.
"""
