"""CollectIQ card valuation core: workflow orchestration for card photos."""

__version__ = "0.1.0"
