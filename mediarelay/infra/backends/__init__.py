# mediarelay/infra/backends/__init__.py
"""
Backend adapters.

Server phase order: NativeExtractor, LibraryExtractor, PipedFleet
(mirror fleet A), InvidiousFleet (mirror fleet B).  The client-side probe
reuses the two fleets with larger tables and adds InnertubeFleet (class C).
"""
from mediarelay.infra.backends.innertube_fleet import InnertubeFleet  # noqa: F401
from mediarelay.infra.backends.library_extractor import LibraryExtractor  # noqa: F401
from mediarelay.infra.backends.mirror_fleets import InvidiousFleet, PipedFleet  # noqa: F401
from mediarelay.infra.backends.native_extractor import NativeExtractor  # noqa: F401
