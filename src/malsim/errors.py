"""Error types raised by the simulator core."""


class ScenarioError(ValueError):
    """Raised at initialisation when a scenario configuration is invalid."""


class UnimplementedError(NotImplementedError):
    """Raised for configuration combinations the model does not support."""


class TreeInconsistencyError(RuntimeError):
    """Raised when a decision identifier has no node in the decision tree.

    A validated tree never produces this; seeing it means the tree and the
    traversal disagree.
    """
