import os

import seg_dataset


def _make_source(root, n_valid=10):
    img_dir = root / "images"
    lbl_dir = root / "labels"
    img_dir.mkdir(parents=True)
    lbl_dir.mkdir(parents=True)
    for i in range(n_valid):
        (img_dir / f"img_{i:02d}.jpg").write_bytes(b"jpg")
        (lbl_dir / f"img_{i:02d}.txt").write_text("0 0.1 0.1 0.9 0.1 0.9 0.9 0.1 0.9\n")
    # no label
    (img_dir / "orphan.jpg").write_bytes(b"jpg")
    # bad label: coordinates out of range
    (img_dir / "bad.png").write_bytes(b"png")
    (lbl_dir / "bad.txt").write_text("0 1.5 0.1 0.9 0.1 0.9 0.9\n")
    # not an image
    (img_dir / "notes.md").write_text("x")
    return root


def test_is_valid_label(tmp_path):
    good = tmp_path / "good.txt"
    good.write_text("0 0.1 0.1 0.9 0.1 0.5 0.9\n")
    odd = tmp_path / "odd.txt"
    odd.write_text("0 0.1 0.1 0.9\n")
    empty = tmp_path / "empty.txt"
    empty.write_text("\n")
    assert seg_dataset.is_valid_label(str(good))
    assert not seg_dataset.is_valid_label(str(odd))
    assert not seg_dataset.is_valid_label(str(empty))


def test_split_indices():
    assert seg_dataset.split_indices(10) == (7, 1, 2)
    assert seg_dataset.split_indices(0) == (0, 0, 0)


def test_split_dataset(tmp_path):
    src = _make_source(tmp_path / "src")
    out = tmp_path / "data"

    counts = seg_dataset.split_dataset(str(src), str(out), seed=1)

    assert counts == {"train": 7, "val": 1, "test": 2}
    all_images = []
    for split in ("train", "val", "test"):
        images = sorted(os.listdir(out / split / "images"))
        labels = sorted(os.listdir(out / split / "labels"))
        assert [os.path.splitext(f)[0] for f in images] == [os.path.splitext(f)[0] for f in labels]
        all_images += images
    assert len(set(all_images)) == 10
    assert "orphan.jpg" not in all_images
    assert "bad.png" not in all_images


def test_split_is_reproducible(tmp_path):
    src = _make_source(tmp_path / "src")
    seg_dataset.split_dataset(str(src), str(tmp_path / "a"), seed=3)
    seg_dataset.split_dataset(str(src), str(tmp_path / "b"), seed=3)
    assert os.listdir(tmp_path / "a" / "val" / "images") == os.listdir(tmp_path / "b" / "val" / "images")
