from .memory import Memory, OutOfRangeAddress

__all__ = ['Memory', 'OutOfRangeAddress']
