from __future__ import annotations

import asyncio

import pytest

from charpipe.batch import BatchPipeline
from charpipe.models import COMPLETE, ERROR, GENERATING, CharacterIdentity, SceneItem
from charpipe.scene_parser import parse_scenes
from charpipe import store

from conftest import HERO, FakeSynthesizer, make_prompt


def _finished_batch(fake=None):
    pipeline = BatchPipeline(fake or FakeSynthesizer(fail_image_for=("b",)))
    pipeline.load(parse_scenes(["a", "b", "c"]), source="scenes.json")
    return asyncio.run(pipeline.run())


def test_image_filename_uses_pinned_identity_and_position():
    item = SceneItem(id=2, scene_text="x", prompt=make_prompt(), status=COMPLETE)
    assert store.image_filename(item, HERO) == "scene_hero_01_3.png"

    item.mime_type = "image/jpeg"
    assert store.image_filename(item, HERO) == "scene_hero_01_3.jpg"


def test_image_filename_falls_back_to_item_prompt():
    item = SceneItem(id=0, scene_text="x", prompt=make_prompt(), status=COMPLETE)
    assert store.image_filename(item, None) == "scene_hero_01_1.png"


def test_write_image_skips_incomplete_items(tmp_path):
    item = SceneItem(id=0, scene_text="x", status=ERROR, error="boom")
    assert store.write_image(item, HERO, tmp_path) is None
    assert list(tmp_path.iterdir()) == []


def test_status_round_trip(tmp_path):
    ctx = _finished_batch()
    images_dir = tmp_path / "images"
    status_file = tmp_path / "status.json"
    for item in ctx.items:
        store.write_image(item, ctx.identity, images_dir)
    store.save_status(status_file, ctx, images_dir)

    loaded = store.load_status(status_file)
    assert loaded.source == "scenes.json"
    assert loaded.identity == ctx.identity
    assert loaded.processed == 3
    assert [item.status for item in loaded.items] == [COMPLETE, ERROR, COMPLETE]
    assert [item.prompt for item in loaded.items] == [item.prompt for item in ctx.items]
    assert loaded.items[0].image_bytes == b"png:a"
    assert loaded.items[1].image_bytes is None
    assert loaded.items[1].error == "No image data found in the API response."


def test_interrupted_items_load_as_errors(tmp_path):
    ctx = _finished_batch()
    ctx.items[2].status = GENERATING
    status_file = tmp_path / "status.json"
    store.save_status(status_file, ctx, tmp_path)

    loaded = store.load_status(status_file)
    assert loaded.items[2].status == ERROR
    assert loaded.items[2].error == "Interrupted"


def test_load_status_missing_file(tmp_path):
    assert store.load_status(tmp_path / "status.json") is None


def test_export_and_clear(tmp_path):
    ctx = _finished_batch()
    written = store.export_images(ctx, tmp_path / "out")
    assert sorted(p.name for p in written) == ["scene_hero_01_1.png", "scene_hero_01_3.png"]

    assert store.clear_batch(tmp_path / "out") is True
    assert not (tmp_path / "out").exists()
    assert store.clear_batch(tmp_path / "out") is False


def test_model_chosen_character_id_cannot_escape_images_dir(tmp_path):
    rogue = CharacterIdentity(character_id="../../escaped", appearance=HERO.appearance)
    item = SceneItem(id=0, scene_text="x", prompt=make_prompt(identity=rogue), status=COMPLETE, image_bytes=b"png")
    images_dir = tmp_path / "images"

    path = store.write_image(item, rogue, images_dir)

    assert path.parent == images_dir
    assert "/" not in store.image_filename(item, rogue)
    assert path.read_bytes() == b"png"
    # the prompt keeps the id the model chose
    assert item.prompt.character_id == "../../escaped"


def test_image_filename_with_empty_slug():
    odd = CharacterIdentity(character_id="...", appearance=HERO.appearance)
    item = SceneItem(id=1, scene_text="x", prompt=make_prompt(identity=odd), status=COMPLETE)
    assert store.image_filename(item, odd) == "scene_unknown_2.png"


@pytest.mark.parametrize("content", [
    "{ not json",
    "[1, 2]",
    '{"items": [{"status": "pending"}]}',
    '{"items": [{"id": 0, "status": "sleeping"}]}',
    '{"identity": {"character_id": 3}, "items": []}',
])
def test_corrupt_status_file_raises_status_error(tmp_path, content):
    status_file = tmp_path / "status.json"
    status_file.write_text(content, encoding="utf-8")
    with pytest.raises(store.StatusError, match="Corrupt status file"):
        store.load_status(status_file)
