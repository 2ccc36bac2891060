from .provider import RustupProvider, ToolchainHandle, ToolchainProvider, release_candidates

__all__ = ["RustupProvider", "ToolchainHandle", "ToolchainProvider", "release_candidates"]
