"""
Policy Loader - read debsig policy files.

Policies live under ``<policies_dir>/<origin id>/*.pol``. Each file is an
XML document in the debsig namespace:

    <Policy xmlns="https://www.debian.org/debsig/1.0/">
      <Origin Name="Debian" id="7CD73F641E04EF2D" Description="Debian package"/>
      <Selection>
        <Required Type="origin" File="debian.gpg" id="7CD73F641E04EF2D"/>
      </Selection>
      <Verification MinOptional="1">
        <Required Type="origin" File="debian.gpg" id="7CD73F641E04EF2D"/>
        <Optional Type="maint" File="maintainers.gpg"/>
        <Reject Type="builder" File="revoked.gpg"/>
      </Verification>
    </Policy>

Each of Selection and Verification becomes up to three Selector Groups, one
per element kind that occurs in it, in the order Required, Optional, Reject.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union
from xml.etree import ElementTree

from ..constants import Paths, SignatureKind, Version
from ..exceptions import PolicyError
from ..logging_config import get_logger
from .model import GroupKind, Match, Policy, SelectorGroup

logger = get_logger(__name__)

_GROUP_ELEMENTS = {
    'Required': GroupKind.REQUIRED,
    'Optional': GroupKind.OPTIONAL,
    'Reject': GroupKind.REJECT,
}


def _split_tag(tag: str) -> Tuple[Optional[str], str]:
    """Split an ElementTree ``{namespace}local`` tag."""
    if tag.startswith('{'):
        namespace, _, local = tag[1:].partition('}')
        return namespace, local
    return None, tag


def _local_name(element: ElementTree.Element, source: str) -> str:
    namespace, local = _split_tag(element.tag)
    if namespace is not None and namespace != Version.POLICY_NAMESPACE:
        raise PolicyError(f"{source}: unknown namespace '{namespace}' on <{local}>",
                          reason="unknown policy namespace")
    return local


def _required_attribute(element: ElementTree.Element, name: str, source: str) -> str:
    value = (element.get(name) or '').strip()
    if not value:
        _, local = _split_tag(element.tag)
        raise PolicyError(f"{source}: <{local}> is missing the {name} attribute",
                          reason="missing policy attribute")
    return value


def _parse_min_optional(element: ElementTree.Element, source: str) -> int:
    raw = element.get('MinOptional', '0').strip()
    try:
        value = int(raw)
    except ValueError:
        raise PolicyError(f"{source}: MinOptional '{raw}' is not a number",
                          reason="invalid MinOptional") from None
    if value < 0:
        raise PolicyError(f"{source}: MinOptional must not be negative",
                          reason="invalid MinOptional")
    return value


def _parse_match(element: ElementTree.Element, source: str) -> Match:
    kind_value = _required_attribute(element, 'Type', source)
    try:
        kind = SignatureKind.from_policy(kind_value)
    except ValueError as e:
        raise PolicyError(f"{source}: {e}", reason="unknown signature type") from e

    return Match(
        keyring_file=_required_attribute(element, 'File', source),
        identity=(element.get('id') or '').strip() or None,
        name=(element.get('Name') or '').strip() or None,
        signature_kind=kind,
        expiry=(element.get('Expiry') or '').strip() or None,
    )


def _parse_section(element: ElementTree.Element, source: str) -> Tuple[SelectorGroup, ...]:
    min_optional = _parse_min_optional(element, source)
    matches: Dict[GroupKind, List[Match]] = {kind: [] for kind in GroupKind}

    for child in element:
        if not isinstance(child.tag, str):
            # Comments and processing instructions
            continue
        local = _local_name(child, source)
        kind = _GROUP_ELEMENTS.get(local)
        if kind is None:
            raise PolicyError(f"{source}: unexpected <{local}> in <{_split_tag(element.tag)[1]}>",
                              reason="unexpected policy element")
        matches[kind].append(_parse_match(child, source))

    if min_optional > len(matches[GroupKind.OPTIONAL]):
        logger.warning(
            f"{source}: MinOptional={min_optional} exceeds the "
            f"{len(matches[GroupKind.OPTIONAL])} Optional entries"
        )

    return tuple(
        SelectorGroup(
            kind=kind,
            matches=tuple(entries),
            min_required=min_optional if kind is GroupKind.OPTIONAL else 0,
        )
        for kind, entries in matches.items()
        if entries
    )


def parse_policy(content: Union[str, bytes], source: str = "<policy>") -> Policy:
    """
    Parse a policy document.

    Raises:
        PolicyError: if the document is not a well-formed debsig policy
    """
    try:
        root = ElementTree.fromstring(content)
    except ElementTree.ParseError as e:
        raise PolicyError(f"{source}: {e}", reason="malformed policy XML") from e

    if _local_name(root, source) != 'Policy':
        raise PolicyError(f"{source}: root element is not <Policy>", reason="not a policy")

    origin = None
    selection: Tuple[SelectorGroup, ...] = ()
    verification: Optional[Tuple[SelectorGroup, ...]] = None

    for child in root:
        if not isinstance(child.tag, str):
            continue
        local = _local_name(child, source)
        if local == 'Origin':
            if origin is not None:
                raise PolicyError(f"{source}: more than one <Origin>", reason="duplicate Origin")
            origin = child
        elif local == 'Selection':
            selection = _parse_section(child, source)
        elif local == 'Verification':
            if verification is not None:
                raise PolicyError(f"{source}: more than one <Verification>",
                                  reason="duplicate Verification")
            verification = _parse_section(child, source)
        else:
            raise PolicyError(f"{source}: unexpected <{local}> in <Policy>",
                              reason="unexpected policy element")

    if origin is None:
        raise PolicyError(f"{source}: no <Origin> element", reason="missing Origin")
    if verification is None:
        raise PolicyError(f"{source}: no <Verification> element", reason="missing Verification")

    return Policy(
        origin=_required_attribute(origin, 'id', source),
        verification=verification,
        selection=selection,
        origin_name=origin.get('Name'),
        origin_description=origin.get('Description'),
        source=source,
    )


def load_policy(path: Union[str, Path]) -> Policy:
    """Read and parse one policy file."""
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise PolicyError(f"cannot read policy {path}: {e}", reason="cannot read policy") from e
    policy = parse_policy(content, source=str(path))
    logger.debug(f"Parsed policy {path} for origin {policy.origin}")
    return policy


def find_policies(policies_dir: Union[str, Path], origin_id: str) -> List[Path]:
    """Policy files for an origin, sorted by file name."""
    if not origin_id or Path(origin_id).name != origin_id or origin_id in ('.', '..'):
        logger.debug(f"Rejecting origin id {origin_id!r}")
        return []

    directory = Path(policies_dir) / origin_id
    if not directory.is_dir():
        logger.debug(f"No policy directory {directory}")
        return []

    found = sorted(
        (p for p in directory.iterdir() if p.suffix == Paths.POLICY_SUFFIX and p.is_file()),
        key=lambda p: p.name,
    )
    logger.debug(f"Found {len(found)} policies in {directory}")
    return found


def load_policies(paths: Iterable[Union[str, Path]]) -> List[Policy]:
    """Parse policy files, skipping (and logging) those that fail."""
    policies = []
    for path in paths:
        try:
            policies.append(load_policy(path))
        except PolicyError as e:
            logger.error(f"Skipping policy: {e}")
    return policies


__all__ = [
    'parse_policy',
    'load_policy',
    'find_policies',
    'load_policies',
]
