"""Acceptance standard store: load, normalize, mutate and persist standards.

Standards live in one JSON file shared by all templates. Each template
(scope key) is bound to one standard by name; unbound templates and
bindings to vanished standards resolve to the privileged "default"
standard, which always exists and can be neither renamed nor deleted.
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Set, Union

from pydantic import ValidationError

from schemas.acceptance import (
    AcceptanceConfig,
    AcceptanceStandard,
    ItemToleranceOverride,
    TemplateBinding,
)
from schemas.enums import DEFAULT_STANDARD_NAME

from .errors import InvalidStandardMutation, PersistenceFailure, StandardNotFoundError
from .persistence import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "cicd_acceptance_standards.json"


def unique_name(base: str, taken: Set[str]) -> str:
    """``base``, else ``base_1``, ``base_2``, ... (``taken`` holds casefolded names)."""
    candidate = base
    index = 1
    while candidate.casefold() in taken:
        candidate = f"{base}_{index}"
        index += 1
    return candidate


def _validate_standard(data) -> AcceptanceStandard:
    try:
        return AcceptanceStandard.model_validate(data)
    except ValidationError as e:
        raise InvalidStandardMutation(f"Invalid acceptance standard: {e}") from e


def _is_default_name(name: Optional[str]) -> bool:
    return (name or "").strip().casefold() == DEFAULT_STANDARD_NAME.casefold()


def _migrate_legacy_templates(config: AcceptanceConfig) -> None:
    """Move per-template standards (v1 layout) into the global list."""
    taken = {s.name.casefold() for s in config.standards}

    for template in config.templates:
        legacy = template.standards or []
        if not legacy:
            template.standards = None
            continue

        prefix = template.template_name.strip() or "Template"
        name_map: Dict[str, str] = {}
        for standard in legacy:
            candidate = standard.name
            if candidate.casefold() in taken:
                candidate = f"{prefix}-{standard.name}"
            migrated = AcceptanceStandard.model_validate(
                {**standard.model_dump(), "name": unique_name(candidate, taken)}
            )
            config.standards.append(migrated)
            taken.add(migrated.name.casefold())
            name_map[standard.name.casefold()] = migrated.name
            logger.info(f"Migrated legacy standard '{standard.name}' of template "
                        f"'{template.template_name}' as '{migrated.name}'")

        active = (template.active_standard_name or "").strip() or legacy[0].name
        template.bound_standard_name = name_map.get(active.casefold(), next(iter(name_map.values())))
        template.standards = None
        template.active_standard_name = None


def normalize_config(config: AcceptanceConfig) -> AcceptanceConfig:
    """
    Return a normalized copy of a config.

    - legacy per-template standards are migrated to the global list
    - duplicate standard names keep their first occurrence
    - the default standard exists (inserted first when missing)
    - overrides are revalidated (deduplicated and sorted)
    - every binding points at an existing standard, else "default"
    """
    config = config.model_copy(deep=True)
    _migrate_legacy_templates(config)

    standards: List[AcceptanceStandard] = []
    seen: Set[str] = set()
    for standard in config.standards:
        standard = AcceptanceStandard.model_validate(standard.model_dump())
        if standard.name.casefold() in seen:
            logger.warning(f"Dropping duplicate acceptance standard '{standard.name}'")
            continue
        seen.add(standard.name.casefold())
        standards.append(standard)
    if DEFAULT_STANDARD_NAME.casefold() not in seen:
        standards.insert(0, AcceptanceStandard())

    by_name = {s.name.casefold(): s.name for s in standards}
    templates: Dict[str, TemplateBinding] = {}
    for template in config.templates:
        bound = template.bound_standard_name or template.active_standard_name or DEFAULT_STANDARD_NAME
        templates[template.template_name.casefold()] = TemplateBinding(
            template_name=template.template_name,
            bound_standard_name=by_name.get(bound.strip().casefold(), DEFAULT_STANDARD_NAME),
        )

    return AcceptanceConfig(standards=standards, templates=list(templates.values()))


class ConfigPaths(NamedTuple):
    load_path: Path
    save_path: Path


def _is_writable_dir(directory: Path) -> bool:
    candidate = directory
    while not candidate.exists():
        if candidate.parent == candidate:
            return False
        candidate = candidate.parent
    return candidate.is_dir() and os.access(candidate, os.W_OK)


def resolve_config_path(
    base_dir: Union[str, Path],
    user_dir: Union[str, Path],
    file_name: str = DEFAULT_CONFIG_FILE,
) -> ConfigPaths:
    """
    Pick where the standards config is read from and written to.

    Reads prefer an existing file in the user directory; writes go to the
    base directory when it is writable, else to the user directory.
    """
    base_file = Path(base_dir) / file_name
    user_file = Path(user_dir) / file_name
    load_path = user_file if user_file.is_file() else base_file
    save_path = base_file if _is_writable_dir(Path(base_dir)) else user_file
    return ConfigPaths(load_path, save_path)


class StandardStore:
    """
    Persistent collection of acceptance standards and template bindings.

    Readers get deep copies; every mutation is validated, normalized and
    written before it returns.
    """

    def __init__(self, path: Union[str, Path], save_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.save_path = Path(save_path) if save_path is not None else self.path
        self._config: Optional[AcceptanceConfig] = None

    @classmethod
    def from_dirs(
        cls,
        base_dir: Union[str, Path],
        user_dir: Union[str, Path],
        file_name: str = DEFAULT_CONFIG_FILE,
    ) -> "StandardStore":
        paths = resolve_config_path(base_dir, user_dir, file_name)
        return cls(paths.load_path, paths.save_path)

    @property
    def config(self) -> AcceptanceConfig:
        if self._config is None:
            self._config = self.load()
        return self._config

    def load(self) -> AcceptanceConfig:
        """
        Read and normalize the config file.

        A missing file yields the default config (not written until the
        first mutation).

        Raises:
            PersistenceFailure: the file cannot be read or is not a valid config
        """
        if not self.path.exists():
            logger.debug(f"No acceptance standards at {self.path}, using defaults")
            self._config = normalize_config(AcceptanceConfig())
            return self._config.model_copy(deep=True)

        try:
            data = json.loads(self.path.read_text(encoding="utf-8-sig"))
            config = AcceptanceConfig.model_validate(data or {})
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load acceptance standards {self.path}: {e}")
            raise PersistenceFailure(self.path, f"Failed to load acceptance standards ({e})") from e

        self._config = normalize_config(config)
        return self._config.model_copy(deep=True)

    def save(self, config: Optional[AcceptanceConfig] = None) -> Path:
        """
        Normalize and write the config as indented JSON.

        Raises:
            PersistenceFailure: the file could not be written
        """
        normalized = normalize_config(config if config is not None else self.config)
        text = json.dumps(
            normalized.model_dump(mode="json", exclude={"templates": {"__all__": {"active_standard_name", "standards"}}}),
            indent=2,
            ensure_ascii=False,
        )
        atomic_write_text(self.save_path, text + "\n")
        self._config = normalized
        logger.debug(f"Saved {len(normalized.standards)} acceptance standards to {self.save_path}")
        return self.save_path

    # Queries

    def list_standards(self) -> List[AcceptanceStandard]:
        return [s.model_copy(deep=True) for s in self.config.standards]

    def get(self, name: str) -> AcceptanceStandard:
        """
        Raises:
            StandardNotFoundError: no standard has this name
        """
        standard = self.config.find_standard(name)
        if standard is None:
            raise StandardNotFoundError(name)
        return standard.model_copy(deep=True)

    def bound_standard_name(self, scope_key: str) -> str:
        binding = self.config.find_template(scope_key)
        if binding is None or not binding.bound_standard_name:
            return DEFAULT_STANDARD_NAME
        return binding.bound_standard_name

    def resolve_active(self, scope_key: str) -> AcceptanceStandard:
        """Snapshot of the standard bound to a template, falling back to "default"."""
        standard = self.config.find_standard(self.bound_standard_name(scope_key))
        if standard is None:
            standard = self.config.find_standard(DEFAULT_STANDARD_NAME)
        return standard.model_copy(deep=True)

    # Mutations

    def _replace_standard(self, config: AcceptanceConfig, standard: AcceptanceStandard) -> None:
        for index, existing in enumerate(config.standards):
            if existing.name.casefold() == standard.name.casefold():
                config.standards[index] = standard
                return
        config.standards.append(standard)

    def bind(self, scope_key: str, name: str) -> None:
        """
        Bind a template to a standard.

        Raises:
            StandardNotFoundError: no standard has this name
        """
        config = self.config.model_copy(deep=True)
        standard = config.find_standard(name)
        if standard is None:
            raise StandardNotFoundError(name)
        binding = config.find_template(scope_key)
        if binding is None:
            config.templates.append(TemplateBinding(template_name=scope_key, bound_standard_name=standard.name))
        else:
            binding.bound_standard_name = standard.name
        self.save(config)
        logger.info(f"Bound template '{scope_key}' to standard '{standard.name}'")

    def upsert(self, standard: AcceptanceStandard) -> AcceptanceStandard:
        """Insert a standard, or replace the one with the same name."""
        standard = _validate_standard(standard.model_dump())
        config = self.config.model_copy(deep=True)
        self._replace_standard(config, standard)
        self.save(config)
        return self.get(standard.name)

    def create(self, base_name: str = "standard") -> AcceptanceStandard:
        """Create a standard with default settings under a unique name."""
        taken = {s.name.casefold() for s in self.config.standards}
        name = unique_name((base_name or "").strip() or "standard", taken)
        return self.upsert(AcceptanceStandard(name=name))

    def copy(self, name: str, new_base_name: Optional[str] = None) -> AcceptanceStandard:
        """Duplicate a standard under a unique name (``<name>_copy`` by default)."""
        source = self.get(name)
        taken = {s.name.casefold() for s in self.config.standards}
        new_name = unique_name((new_base_name or "").strip() or f"{source.name}_copy", taken)
        return self.upsert(AcceptanceStandard.model_validate({**source.model_dump(), "name": new_name}))

    def rename(self, old_name: str, new_name: str) -> AcceptanceStandard:
        """
        Rename a standard and move every template binding with it.

        Raises:
            InvalidStandardMutation: renaming "default", a blank new name or a clash
            StandardNotFoundError: no standard has the old name
        """
        new_name = (new_name or "").strip()
        if _is_default_name(old_name):
            raise InvalidStandardMutation(f"The '{DEFAULT_STANDARD_NAME}' standard cannot be renamed")
        if not new_name:
            raise InvalidStandardMutation("New standard name must not be blank")

        config = self.config.model_copy(deep=True)
        standard = config.find_standard(old_name)
        if standard is None:
            raise StandardNotFoundError(old_name)
        clash = config.find_standard(new_name)
        if clash is not None and clash is not standard:
            raise InvalidStandardMutation(f"A standard named '{clash.name}' already exists")

        previous = standard.name
        standard.name = new_name
        for binding in config.templates:
            if (binding.bound_standard_name or "").casefold() == previous.casefold():
                binding.bound_standard_name = new_name
        self.save(config)
        logger.info(f"Renamed standard '{previous}' to '{new_name}'")
        return self.get(new_name)

    def delete(self, name: str) -> None:
        """
        Delete a standard; templates bound to it fall back to "default".

        Raises:
            InvalidStandardMutation: deleting "default" or the last standard
            StandardNotFoundError: no standard has this name
        """
        if _is_default_name(name):
            raise InvalidStandardMutation(f"The '{DEFAULT_STANDARD_NAME}' standard cannot be deleted")

        config = self.config.model_copy(deep=True)
        standard = config.find_standard(name)
        if standard is None:
            raise StandardNotFoundError(name)
        if len(config.standards) <= 1:
            raise InvalidStandardMutation("At least one acceptance standard must remain")

        config.standards = [s for s in config.standards if s is not standard]
        for binding in config.templates:
            if (binding.bound_standard_name or "").casefold() == standard.name.casefold():
                binding.bound_standard_name = DEFAULT_STANDARD_NAME
        self.save(config)
        logger.info(f"Deleted standard '{standard.name}'")

    def _update(self, name: str, **changes) -> AcceptanceStandard:
        standard = self.get(name)
        return self.upsert(_validate_standard({**standard.model_dump(), **changes}))

    def set_default_tolerance(self, name: str, tolerance_abs: float, tolerance_ratio: float) -> AcceptanceStandard:
        return self._update(name, default_tolerance_abs=tolerance_abs, default_tolerance_ratio=tolerance_ratio)

    def set_allowance(
        self,
        name: str,
        ok_ng: Optional[int] = None,
        defect_type: Optional[int] = None,
        extent: Optional[int] = None,
    ) -> AcceptanceStandard:
        """Change the allowed mismatch counts that are given (None keeps the current one)."""
        changes = {}
        if ok_ng is not None:
            changes["allowed_ok_ng_mismatch"] = ok_ng
        if defect_type is not None:
            changes["allowed_defect_type_mismatch"] = defect_type
        if extent is not None:
            changes["allowed_extent_mismatch"] = extent
        return self._update(name, **changes)

    def set_item_tolerance(
        self,
        name: str,
        item_name: str,
        tolerance_abs: float,
        tolerance_ratio: float = 0.0,
    ) -> AcceptanceStandard:
        """Add or replace the tolerance override of one item."""
        if not (item_name or "").strip():
            raise InvalidStandardMutation("Item name must not be blank")
        standard = self.get(name)
        overrides = [o.model_dump() for o in standard.item_tolerances]
        overrides.append(ItemToleranceOverride(
            item_name=item_name,
            tolerance_abs=tolerance_abs,
            tolerance_ratio=tolerance_ratio,
        ).model_dump())
        return self._update(name, item_tolerances=overrides)

    def remove_item_tolerance(self, name: str, item_name: str) -> AcceptanceStandard:
        """Drop the override of one item (no-op when there is none)."""
        standard = self.get(name)
        folded = (item_name or "").strip().casefold()
        overrides = [o.model_dump() for o in standard.item_tolerances if o.item_name.casefold() != folded]
        return self._update(name, item_tolerances=overrides)
