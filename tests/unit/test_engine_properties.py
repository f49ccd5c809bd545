from __future__ import annotations

from pathlib import Path
from typing import List

import pytest
from pydantic import BaseModel, ConfigDict

from savekit.engine import SaveEngine
from savekit.errors import ConfigurationError, CryptoError
from savekit.models import EngineConfig, Layout, SaveFormat


class PlayerData(BaseModel):
    name: str
    level: int = 1
    position: List[float] = []


class InventoryData(BaseModel):
    items: List[str] = []


PLAYER = PlayerData(name="Ayla", level=12, position=[1.5, 2.0, -3.25])


class Opaque:
    def __reduce__(self):
        raise TypeError("Opaque cannot be pickled")


class Holder(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    thing: Opaque


@pytest.mark.parametrize("layout", list(Layout))
@pytest.mark.parametrize("fmt", list(SaveFormat))
@pytest.mark.parametrize("encrypted", [False, True])
def test_save_load_roundtrip_all_combinations(
    tmp_path: Path, layout: Layout, fmt: SaveFormat, encrypted: bool
):
    engine = SaveEngine(tmp_path, layout=layout, format=fmt)
    engine.set_encryption(encrypted, "pw")

    assert engine.save("slot1", PLAYER)
    assert engine.load("slot1", PlayerData) == PLAYER

    # a fresh engine (no caches) with default settings reads it too
    assert SaveEngine(tmp_path, encryption_key="pw").load("slot1", PlayerData) == PLAYER


@pytest.mark.parametrize("layout", list(Layout))
@pytest.mark.parametrize("fmt", list(SaveFormat))
def test_save_of_unserializable_value_reports_false(
    tmp_path: Path, layout: Layout, fmt: SaveFormat
):
    engine = SaveEngine(tmp_path, layout=layout, format=fmt)

    assert engine.save("slot1", Holder(thing=Opaque())) is False
    assert engine.get_metadata("slot1") is None


def test_layout_isolation_between_keys(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("slot1", PlayerData(name="a"), data_key="a")
    engine.save("slot1", PlayerData(name="b"), data_key="b")

    assert engine.delete("slot1", "a")

    assert engine.load("slot1", PlayerData, data_key="b").name == "b"
    assert engine.get_metadata("slot1") is not None


def test_metadata_survives_format_switch(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.save("slot1", PLAYER)

    engine.set_codec(SaveFormat.BINARY)
    assert engine.load("slot1", PlayerData) == PLAYER
    # load does not leave the recorded format behind in the engine
    assert engine.format is SaveFormat.BINARY


def test_metadata_survives_layout_switch(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("slot1", PLAYER, data_key="main")

    engine.set_layout(Layout.SINGLE_FILE)
    engine.set_codec(SaveFormat.MSGPACK)
    assert engine.load("slot1", PlayerData) == PLAYER
    assert engine.config.layout is Layout.SINGLE_FILE
    assert engine.config.format is SaveFormat.MSGPACK


def test_load_after_delete_returns_none_despite_cache(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("slot1", PLAYER)
    assert engine.load("slot1", PlayerData) == PLAYER  # warms the cache

    assert engine.delete("slot1")
    assert engine.load("slot1", PlayerData) is None


def test_load_after_entry_delete_returns_none_despite_cache(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("slot1", InventoryData(items=["rope"]), data_key="inventory")
    engine.load("slot1", InventoryData, data_key="inventory")

    assert engine.delete("slot1", "inventory")
    assert engine.load("slot1", InventoryData, data_key="inventory") is None


def test_layout_switch_removes_previous_payload(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.save("slot1", PlayerData(name="old"))

    engine.set_layout(Layout.FOLDER_BASED)
    assert engine.save("slot1", PlayerData(name="new"))

    assert not (tmp_path / "slot1.json").exists()
    assert engine.load("slot1", PlayerData).name == "new"

    engine.set_layout(Layout.SINGLE_FILE)
    assert engine.save("slot1", PlayerData(name="flat"))
    assert not (tmp_path / "slot1").exists()
    assert engine.load("slot1", PlayerData).name == "flat"


def test_delete_after_layout_switch_leaves_nothing_to_load(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.save("slot1", PlayerData(name="old"))
    engine.set_layout(Layout.FOLDER_BASED)
    engine.save("slot1", PlayerData(name="new"))

    assert engine.delete("slot1") is True

    engine.set_layout(Layout.SINGLE_FILE)
    assert engine.load("slot1", PlayerData) is None
    assert engine.list() == []
    assert list(tmp_path.iterdir()) == []


def test_delete_removes_orphan_payload_of_other_layout(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("slot1", PLAYER)
    (tmp_path / "slot1.json").write_text(PLAYER.model_dump_json(), encoding="utf-8")

    assert engine.delete("slot1")
    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize("layout", list(Layout))
def test_delete_all_is_idempotent(tmp_path: Path, layout: Layout):
    engine = SaveEngine(tmp_path, layout=layout)
    engine.save("a", PLAYER)
    engine.save("b", PLAYER)

    assert engine.delete_all() == 2
    assert engine.list() == []
    assert engine.delete_all() == 0


def test_delete_all_clears_caches(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout=Layout.FOLDER_BASED)
    engine.save("a", PLAYER)
    engine.load("a", PlayerData)

    engine.delete_all()
    assert engine.load("a", PlayerData) is None
    assert engine.get_metadata("a") is None


def test_folder_scenario_keys_and_total_size(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.set_layout(Layout.FOLDER_BASED)
    engine.save("slot1", PLAYER, data_key="main")
    engine.save("slot1", InventoryData(items=["potion", "map"]), data_key="inventory")

    assert set(engine.list_data_keys("slot1")) == {"main", "inventory"}
    assert "_metadata" not in engine.list_data_keys("slot1")

    folder = tmp_path / "slot1"
    total = sum((folder / f"{k}.json").stat().st_size for k in ("main", "inventory"))
    assert engine.get_info("slot1").size_bytes == total


def test_encrypted_save_loads_after_encryption_disabled(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.set_encryption(True, "pw")
    engine.save("s", PLAYER)

    raw = (tmp_path / "s.json").read_text(encoding="utf-8")
    assert "Ayla" not in raw
    meta_raw = (tmp_path / "s_metadata.json").read_text(encoding="utf-8")
    assert not meta_raw.startswith("{")

    engine.set_encryption(False)
    assert engine.encryption_enabled is False
    assert engine.load("s", PlayerData) == PLAYER


def test_plain_save_loads_after_encryption_enabled(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.save("s", PLAYER)

    engine.set_encryption(True, "pw")
    assert engine.load("s", PlayerData) == PLAYER


def test_encrypted_save_with_wrong_key_fails_loudly(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.set_encryption(True, "pw")
    engine.save("s", PLAYER)

    other = SaveEngine(tmp_path, encryption_enabled=True, encryption_key="not-pw")
    with pytest.raises(CryptoError):
        other.load("s", PlayerData)


def test_unreadable_metadata_does_not_block_saving(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    engine.set_encryption(True, "pw")
    engine.save("s", PLAYER)

    other = SaveEngine(tmp_path, encryption_key="not-pw")
    assert other.save("s", PlayerData(name="overwritten"))
    assert other.load("s", PlayerData).name == "overwritten"


def test_setters_recreate_missing_root(tmp_path: Path):
    root = tmp_path / "root"
    engine = SaveEngine(root)
    engine.initialize()
    root.rmdir()

    engine.set_layout(Layout.FOLDER_BASED)
    assert root.is_dir()


def test_set_root_path_validates_and_switches(tmp_path: Path):
    engine = SaveEngine(tmp_path / "one")
    engine.save("s", PLAYER)

    with pytest.raises(ConfigurationError):
        engine.set_root_path("")

    engine.set_root_path(tmp_path / "two")
    assert (tmp_path / "two").is_dir()
    assert engine.list() == []
    assert engine.load("s", PlayerData) is None


def test_invalid_layout_and_format_raise(tmp_path: Path):
    engine = SaveEngine(tmp_path)
    with pytest.raises(ConfigurationError):
        engine.set_layout("sideways")
    with pytest.raises(ConfigurationError):
        engine.set_codec("xml")


def test_config_snapshot_and_from_config(tmp_path: Path):
    engine = SaveEngine(tmp_path, layout="folder_based", format="yaml")
    engine.set_encryption(True, "pw")

    cfg = engine.config
    assert cfg == EngineConfig(
        root_path=tmp_path,
        layout=Layout.FOLDER_BASED,
        format=SaveFormat.YAML,
        encryption_enabled=True,
        encryption_key="pw",
    )
    assert "pw" not in repr(cfg)

    clone = SaveEngine.from_config(cfg)
    assert clone.config == cfg
