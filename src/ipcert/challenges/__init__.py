"""ACME challenge handling."""

from ipcert.challenges.base import ChallengeStore
from ipcert.challenges.http01 import InMemoryChallengeStore, compute_key_authorization

__all__ = ["ChallengeStore", "InMemoryChallengeStore", "compute_key_authorization"]
