# mediarelay/client/__init__.py
"""
Caller-side resolution: the client probe and the acquisition controller.
"""
from mediarelay.client.acquisition import AcquisitionController  # noqa: F401
from mediarelay.client.probe import ClientProbe, ProbeReport, client_context  # noqa: F401
