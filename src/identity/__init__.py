"""
Identity resolution for contact fragments.

This package handles:
- Locating the groups a fragment touches and their primary
- Merging groups a fragment bridges
- Recording new fragments, including concurrent-insert races
- Building the consolidated identity view
"""

from src.identity.merge import MergeEngine
from src.identity.reconciler import RecordReconciler
from src.identity.resolver import GroupResolver, Resolution
from src.identity.service import IdentityService
from src.identity.view import IdentityView, ViewBuilder

__all__ = [
    "GroupResolver",
    "IdentityService",
    "IdentityView",
    "MergeEngine",
    "RecordReconciler",
    "Resolution",
    "ViewBuilder",
]
