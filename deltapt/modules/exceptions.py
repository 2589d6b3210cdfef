#!/usr/bin/env python3
"""
Custom exceptions for the delta-pt/pt cut study

Provides a hierarchy of exceptions for better error handling and diagnostics.
All custom exceptions inherit from AnalysisError for easy catching.
"""


class AnalysisError(Exception):
    """
    Base exception for all cut study errors

    All custom exceptions inherit from this class, allowing users to catch
    all analysis-specific errors with a single except clause.
    """
    pass


class ConfigurationError(AnalysisError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Missing study config file
    - Non-positive sigma multiplier
    - Inverted plot or fit range
    """
    pass


class DataLoadError(AnalysisError):
    """
    Raised when an input file or tuple cannot be opened

    Examples:
    - File not found
    - Corrupted ROOT file
    - Missing track or truth tuple in ROOT file
    """
    pass


class BranchMissingError(DataLoadError):
    """
    Raised when a required leaf is not found in a tuple

    Examples:
    - Missing kinematic leaf (e.g., pt, gpt)
    - Leaf name typo in configuration
    """
    def __init__(self, branch_name: str, file_path: str = None):
        """
        Initialize BranchMissingError

        Args:
            branch_name: Name of the missing leaf
            file_path: Optional path to the file being read
        """
        self.branch_name = branch_name
        self.file_path = file_path

        message = f"Required branch '{branch_name}' not found"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class EmptyTableError(DataLoadError):
    """
    Raised when a required tuple holds zero rows

    Every downstream ratio would be meaningless, so the run stops
    before the first pass.
    """
    def __init__(self, table_name: str, file_path: str = None):
        self.table_name = table_name
        self.file_path = file_path

        message = f"Tuple '{table_name}' has no entries"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class RowReadError(AnalysisError):
    """
    Raised when a chunk of rows fails to materialize mid-pass

    Only the pass that hit it is aborted; accumulators keep
    whatever was filled before the failure.
    """
    def __init__(self, table_name: str, entry: int, reason: str = ""):
        self.table_name = table_name
        self.entry = entry

        message = f"Failed reading '{table_name}' at entry {entry}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class FittingError(AnalysisError):
    """
    Raised when a fit cannot be set up at all

    Examples:
    - Fewer usable points than fit parameters
    - Projection anchor outside the histogram axis

    Plain non-convergence is not an error: fits keep their last
    parameters and are flagged as not converged.
    """
    pass


class EfficiencyError(AnalysisError):
    """
    Raised when efficiency calculation fails

    Examples:
    - Numerator and denominator with different binning
    - Rebin factor smaller than one
    """
    pass


class ValidationError(AnalysisError):
    """
    Raised when validation checks fail

    Examples:
    - Two output objects built with the same name
    - Duplicate cut labels
    """
    pass
