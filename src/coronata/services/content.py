from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Mapping

from jsonschema import Draft202012Validator

from coronata.engine.builtin import register_builtins
from coronata.engine.effects import EffectRegistry
from coronata.engine.patterns import compile_effect
from coronata.engine.wander import Wander, WanderChoice, WanderError, check_instructions

logger = logging.getLogger(__name__)


class ContentError(RuntimeError):
    pass


def _load_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ContentError(f"Missing content file: {path}") from e
    except json.JSONDecodeError as e:
        raise ContentError(f"Invalid JSON in {path}: {e}") from e


def validate_json(instance: object, schema: object, *, context: str) -> None:
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(instance), key=lambda e: e.path)
    if errors:
        lines = [f"Schema validation failed for {context}:"]
        for err in errors[:10]:
            loc = "/".join(str(p) for p in err.absolute_path)
            lines.append(f"- {loc}: {err.message}")
        raise ContentError("\n".join(lines))


def _require_str(obj: Mapping[str, object], key: str) -> str:
    v = obj.get(key)
    if not isinstance(v, str):
        raise ContentError(f"Expected string for {key}")
    return v


def _require_list(obj: Mapping[str, object], key: str) -> list[object]:
    v = obj.get(key)
    if not isinstance(v, list):
        raise ContentError(f"Expected list for {key}")
    return v


def _parse_choice(raw: Mapping[str, object], wander_id: str) -> WanderChoice:
    instructions = raw.get("effects", [])
    if not isinstance(instructions, list):
        raise ContentError(f"{wander_id}: effects must be a list")
    try:
        check_instructions(instructions)
    except WanderError as e:
        raise ContentError(f"{wander_id}: {e}") from e
    return WanderChoice(
        label=_require_str(raw, "label"),
        result=_require_str(raw, "result"),
        instructions=tuple(instructions),
    )


class ContentService:
    def __init__(self, data_dir: Path, schema_dir: Path) -> None:
        self._data_dir = data_dir
        self._schema_dir = schema_dir

    def _load_validated(self, name: str) -> dict[str, object]:
        path = self._data_dir / f"{name}.json"
        raw = _load_json(path)
        schema = _load_json(self._schema_dir / f"{name}.schema.json")
        validate_json(raw, schema, context=str(path))
        if not isinstance(raw, dict):
            raise ContentError(f"{name}.json must be an object")
        return raw

    def load_effects(self) -> EffectRegistry:
        raw = self._load_validated("effects")
        registry = EffectRegistry()
        for item in _require_list(raw, "effects"):
            if not isinstance(item, dict):
                continue
            effect_id = _require_str(item, "id")
            try:
                registry.register(compile_effect(item))
            except ValueError as e:
                raise ContentError(f"Effect {effect_id}: {e}") from e
        try:
            register_builtins(registry)
        except ValueError as e:
            raise ContentError(f"Built-in effect clashes with content: {e}") from e
        logger.debug("Loaded %d effects", len(registry))
        return registry

    def load_wanders(self) -> tuple[Wander, ...]:
        raw = self._load_validated("wanders")
        out: list[Wander] = []
        seen: set[str] = set()
        for item in _require_list(raw, "wanders"):
            if not isinstance(item, dict):
                continue
            wid = _require_str(item, "id")
            if wid in seen:
                raise ContentError(f"Duplicate wander id: {wid}")
            seen.add(wid)
            choices = [_parse_choice(c, wid) for c in _require_list(item, "choices") if isinstance(c, dict)]
            min_encounter = item.get("min_encounter", 0)
            out.append(
                Wander(
                    id=wid,
                    label=_require_str(item, "label"),
                    description=_require_str(item, "description"),
                    choices=tuple(choices),
                    min_encounter=min_encounter if isinstance(min_encounter, int) else 0,
                    hidden=bool(item.get("hidden", False)),
                )
            )
        logger.debug("Loaded %d wanders", len(out))
        return tuple(out)

    def validate_all(self) -> None:
        # Load is validation (schema + compile)
        registry = self.load_effects()
        wanders = self.load_wanders()
        for w in wanders:
            for choice in w.choices:
                for ins in _referenced_ids(choice.instructions):
                    if ins not in registry:
                        raise ContentError(f"Wander {w.id} references unknown effect {ins}")


def _referenced_ids(instructions: object) -> list[str]:
    ids: list[str] = []
    if not isinstance(instructions, (list, tuple)):
        return ids
    for ins in instructions:
        if not isinstance(ins, Mapping):
            continue
        if isinstance(ins.get("id"), str):
            ids.append(ins["id"])
        ids.extend(_referenced_ids(ins.get("success", [])))
        ids.extend(_referenced_ids(ins.get("failure", [])))
    return ids
