from .allocator import IPAllocator

__all__ = ["IPAllocator"]
