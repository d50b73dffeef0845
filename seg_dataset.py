import argparse
import os
import random
import shutil

# ---- CONFIG ----

# Annotated photos: SOURCE_DIR/images/*.jpg with SOURCE_DIR/labels/*.txt
# (YOLO segmentation format: "class x1 y1 x2 y2 ... xn yn", normalized)
SOURCE_DIR = "photo-annotations"

# Output YOLO-style dataset root
OUT_DIR = "data"

# Train / Val / Test split
TRAIN_RATIO = 0.70
VAL_RATIO = 0.15
TEST_RATIO = 0.15

# Accepted image extensions
IMAGE_EXTS = (".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff")

SEED = 42

# ---- SAFETY CHECK ----
assert abs(TRAIN_RATIO + VAL_RATIO + TEST_RATIO - 1.0) < 1e-6, "Splits must sum to 1."


def make_yolo_dirs(out_dir):
    """Create out_dir/train|val|test/images and labels directories."""
    for split in ["train", "val", "test"]:
        os.makedirs(os.path.join(out_dir, split, "images"), exist_ok=True)
        os.makedirs(os.path.join(out_dir, split, "labels"), exist_ok=True)


def list_pairs(source_dir):
    """
    (image_path, label_path) for every image that has a label file.
    Images without labels are reported and skipped.
    """
    img_dir = os.path.join(source_dir, "images")
    lbl_dir = os.path.join(source_dir, "labels")
    pairs = []
    for fname in sorted(os.listdir(img_dir)):
        if not fname.lower().endswith(IMAGE_EXTS):
            continue
        label = os.path.join(lbl_dir, os.path.splitext(fname)[0] + ".txt")
        if not os.path.isfile(label):
            print(f"Warning: no label for '{fname}', skipping.")
            continue
        pairs.append((os.path.join(img_dir, fname), label))
    return pairs


def is_valid_label(label_path):
    """Every line must be a class id followed by at least 3 normalized (x, y) points."""
    with open(label_path, "r") as f:
        lines = [ln.split() for ln in f if ln.strip()]
    if not lines:
        return False
    for parts in lines:
        coords = parts[1:]
        if len(coords) < 6 or len(coords) % 2 != 0:
            return False
        try:
            values = [float(v) for v in coords]
        except ValueError:
            return False
        if any(v < 0.0 or v > 1.0 for v in values):
            return False
    return True


def split_indices(n):
    """Compute counts for train/val/test given n samples."""
    n_train = int(n * TRAIN_RATIO)
    n_val = int(n * VAL_RATIO)
    n_test = n - n_train - n_val
    return n_train, n_val, n_test


def split_dataset(source_dir=SOURCE_DIR, out_dir=OUT_DIR, seed=SEED):
    make_yolo_dirs(out_dir)

    pairs = [p for p in list_pairs(source_dir) if is_valid_label(p[1])]
    random.Random(seed).shuffle(pairs)

    n_train, n_val, _ = split_indices(len(pairs))
    split_files = {
        "train": pairs[:n_train],
        "val": pairs[n_train:n_train + n_val],
        "test": pairs[n_train + n_val:],
    }

    total_counts = {}
    for split, file_list in split_files.items():
        for img_path, lbl_path in file_list:
            shutil.copy2(img_path, os.path.join(out_dir, split, "images", os.path.basename(img_path)))
            shutil.copy2(lbl_path, os.path.join(out_dir, split, "labels", os.path.basename(lbl_path)))
        total_counts[split] = len(file_list)

    return total_counts


def main():
    parser = argparse.ArgumentParser(description="Split annotated photo-print images into YOLO splits")
    parser.add_argument("--source", default=SOURCE_DIR)
    parser.add_argument("--out", default=OUT_DIR)
    parser.add_argument("--seed", type=int, default=SEED)
    args = parser.parse_args()

    counts = split_dataset(args.source, args.out, args.seed)

    print("\nDone!")
    print("Total images per split:")
    for split in ["train", "val", "test"]:
        print(f"  {split}: {counts[split]}")


if __name__ == "__main__":
    main()
