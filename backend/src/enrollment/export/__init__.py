"""Profile export: PEM, PKCS12, mobileconfig and eap-metadata."""

from enrollment.export.profile_exporter import ExportedProfile, ProfileExporter
from enrollment.export.schemas import NetworkProfile

__all__ = ["ExportedProfile", "NetworkProfile", "ProfileExporter"]
