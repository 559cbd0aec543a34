from ._native_loader import candidate_names, load_native, native_available

__all__ = ["candidate_names", "load_native", "native_available"]
