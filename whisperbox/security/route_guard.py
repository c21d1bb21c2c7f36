"""Stateless allow/redirect decisions for page routes."""

from __future__ import annotations

from dataclasses import dataclass

SIGN_IN_PATH = "/signin"
PROTECTED_HOME = "/dashboard"

# "/" is the landing page and only matches exactly; the others also cover sub-paths.
LANDING_PATH = "/"
PUBLIC_AUTH_PREFIXES = ("/signin", "/signup", "/verify")
PROTECTED_PREFIXES = ("/dashboard",)


@dataclass(frozen=True, slots=True)
class GuardDecision:
    redirect_to: str | None = None

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


ALLOW = GuardDecision()


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def _normalise(path: str) -> str:
    if not path:
        return LANDING_PATH
    if len(path) > 1:
        path = path.rstrip("/") or LANDING_PATH
    return path


def is_public_auth_path(path: str) -> bool:
    path = _normalise(path)
    return path == LANDING_PATH or any(_under(path, prefix) for prefix in PUBLIC_AUTH_PREFIXES)


def is_protected_path(path: str) -> bool:
    path = _normalise(path)
    return any(_under(path, prefix) for prefix in PROTECTED_PREFIXES)


def decide(has_valid_token: bool, path: str) -> GuardDecision:
    """Map (session present, requested path) to allow or a redirect target."""
    if has_valid_token and is_public_auth_path(path):
        return GuardDecision(redirect_to=PROTECTED_HOME)
    if not has_valid_token and is_protected_path(path):
        return GuardDecision(redirect_to=SIGN_IN_PATH)
    return ALLOW
