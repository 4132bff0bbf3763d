"""Command-line interface modules for imputation pipeline execution.

This package contains core execution logic, making scripts/ optional and deletable.
The runners are not imported here so that ``python -m imputepipe.cli.run_imputation``
(how batch jobs start the pipeline) loads each module once.
"""
