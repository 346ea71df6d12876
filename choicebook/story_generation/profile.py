"""
Structured representation of the kid details a story is personalized for.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None

    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected an integer-compatible value for age, got {value!r}") from exc


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _resolve_name(data: Mapping[str, Any]) -> str | None:
    name = _coerce_optional_str(data.get("name"))
    if name:
        return name

    # Localized form payloads carry a list of {firstName, lastName, languageCode}.
    names = data.get("names")
    if isinstance(names, (list, tuple)) and names:
        preferred_language = data.get("language") or data.get("languageCode")
        entries = [entry for entry in names if isinstance(entry, Mapping)]
        chosen = next(
            (entry for entry in entries if entry.get("languageCode") == preferred_language),
            entries[0] if entries else None,
        )
        if chosen is not None:
            full = f"{chosen.get('firstName', '')} {chosen.get('lastName', '')}".strip()
            return full or None
    return None


@dataclass(frozen=True)
class KidDetails:
    """
    The child a story is generated for.

    Attributes
    ----------
    id:
        Kid identifier, used as ``kid_id`` on stories and in error contexts.
    account_id:
        Owning account; used as the acting user when none is given explicitly.
    name:
        Name used in the narrative.
    age:
        Age in years, if known.
    gender:
        Gender or pronoun preference.
    avatar_url:
        Reference photo of the child; passed to the image model for likeness.
    image_analysis:
        Text description of the reference photo, woven into image prompts.
    selected_avatar_url:
        Generated avatar chosen by the family, if any.
    """

    id: str
    account_id: str
    name: str
    age: int | None = None
    gender: str | None = None
    avatar_url: str | None = None
    image_analysis: str | None = None
    selected_avatar_url: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "KidDetails":
        """
        Build kid details from a dict-like object (parsed JSON/YAML, snake or camel case).
        """
        name = _resolve_name(data)
        if not name:
            raise ValueError("Kid details must include a non-empty 'name' field.")

        kid_id = _coerce_optional_str(_first_present(data, "id", "kid_id", "kidId"))
        if not kid_id:
            raise ValueError("Kid details must include a non-empty 'id' field.")

        return cls(
            id=kid_id,
            account_id=_coerce_optional_str(
                _first_present(data, "account_id", "accountId", "user_id", "userId")
            )
            or "",
            name=name,
            age=_coerce_optional_int(data.get("age")),
            gender=_coerce_optional_str(_first_present(data, "gender", "sex", "pronouns")),
            avatar_url=_coerce_optional_str(
                _first_present(data, "avatar_url", "avatarUrl", "reference_image")
            ),
            image_analysis=_coerce_optional_str(
                _first_present(data, "image_analysis", "imageAnalysis")
            ),
            selected_avatar_url=_coerce_optional_str(
                _first_present(data, "selected_avatar_url", "kidSelectedAvatar")
            ),
        )

    @property
    def reference_image(self) -> str | None:
        """Best image to anchor likeness: the chosen avatar, else the uploaded photo."""
        return self.selected_avatar_url or self.avatar_url

    def with_image_analysis(self, analysis: str) -> "KidDetails":
        return replace(self, image_analysis=analysis.strip() or None)

    def context_bullets(self) -> list[str]:
        """
        Produce bullet-friendly lines describing the child, for prompt conditioning.
        """
        bullets: list[str] = [f"Name: {self.name}"]

        if self.age is not None:
            bullets.append(f"Age: {self.age}")

        if self.gender:
            bullets.append(f"Gender/pronouns: {self.gender}")

        if self.image_analysis:
            bullets.append(f"Appearance: {self.image_analysis}")

        return bullets
