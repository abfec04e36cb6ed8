"""
Type-tag registry of prior classes.

Every concrete :class:`~oneofn.base.prior.MultivariatePrior` is registered
under its ``type_tag``. The tag is written next to each persisted candidate
and used to pick the class that restores it.
"""

from typing import Dict, Mapping, Optional, Type

PRIOR_TYPES: Dict[str, Type] = {}


def register_prior(cls: Type) -> Type:
    """Class decorator adding ``cls`` to :data:`PRIOR_TYPES`."""
    tag = cls.type_tag
    if not tag:
        raise ValueError(f"{cls.__name__} has no type_tag")
    existing = PRIOR_TYPES.get(tag)
    if existing is not None and existing is not cls:
        raise ValueError(f"Type tag {tag!r} already registered to {existing.__name__}")
    PRIOR_TYPES[tag] = cls
    return cls


def lookup_prior(tag: str, candidate_types: Optional[Mapping[str, Type]] = None) -> Optional[Type]:
    """Class registered under ``tag``, or ``None`` if it is unknown."""
    types = PRIOR_TYPES if candidate_types is None else candidate_types
    return types.get(tag)
