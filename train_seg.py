import argparse
from pathlib import Path

import yaml
from ultralytics import YOLO

from photoscan.models_impl import export_torchscript

# Define paths relative to the script execution location
BASE_DIR = Path('.')
DATA_YAML_PATH = BASE_DIR / "data" / "data.yaml"
DATASET_ROOT = BASE_DIR / "data"   # output of seg_dataset.py
WEIGHTS_SAVE_PATH = BASE_DIR / "models" / "segmenter"
EXPORT_NAME = "photo_seg.torchscript"

# One class: a rectangular photographic print
CLASS_NAMES = ['photo']


def create_data_yaml(yaml_path: Path, dataset_root: Path = DATASET_ROOT) -> dict:
    """Creates the data.yaml file required by YOLOv8 (train/val/test image folders)."""

    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    # YOLO finds labels by swapping 'images' for 'labels' in each image path,
    # which is the layout seg_dataset.py writes.
    yaml_content = {
        'path': str(dataset_root.resolve()),
        'train': 'train/images',
        'val': 'val/images',
        'test': 'test/images',
        'nc': len(CLASS_NAMES),
        'names': CLASS_NAMES,
    }

    with open(yaml_path, 'w') as f:
        yaml.dump(yaml_content, f, default_flow_style=False)

    print(f"Created data.yaml at: {yaml_path}")
    return yaml_content


def train_segmenter(epochs: int = 50, batch_size: int = 16, model_size: str = 'n',
                    device: str = '0', imgsz: int = 640) -> Path:
    """
    Trains a YOLOv8 segmentation model on the photo dataset and exports it.
    """

    # 0. Generate data.yaml before starting training
    create_data_yaml(DATA_YAML_PATH)

    # 1. Load a pre-trained base model
    base_model_file = f'yolov8{model_size}-seg.pt'
    print(f"\nLoading base model: {base_model_file}")
    model = YOLO(base_model_file)

    # Ensure the weights directory exists
    WEIGHTS_SAVE_PATH.mkdir(parents=True, exist_ok=True)

    # 2. Start Training
    model.train(
        data=str(DATA_YAML_PATH),
        imgsz=imgsz,
        epochs=epochs,
        batch=batch_size,
        name='photo_seg_run',
        device=device,
        save=True,
        exist_ok=True,
        project=str(WEIGHTS_SAVE_PATH),
    )

    best = WEIGHTS_SAVE_PATH / 'photo_seg_run' / 'weights' / 'best.pt'
    print("\n--- Training Complete ---")
    print(f"Best weights: {best}")

    # 3. Export for the live scanner
    target = export_torchscript(str(best), imgsz, WEIGHTS_SAVE_PATH / EXPORT_NAME)
    print(f"TorchScript model written to: {target}")
    return target


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="YOLOv8-seg photo print trainer")
    parser.add_argument("--epochs", type=int, default=50, help="Number of epochs to train.")
    parser.add_argument("--batch", type=int, default=16, help="Batch size.")
    parser.add_argument("--model", type=str, default='n', help="YOLOv8 model size ('n', 's', 'm', 'l', 'x').")
    parser.add_argument("--device", type=str, default='0', help="GPU index or 'cpu'.")
    parser.add_argument("--imgsz", type=int, default=640, help="Network input size.")
    args = parser.parse_args()

    train_segmenter(epochs=args.epochs, batch_size=args.batch, model_size=args.model,
                    device=args.device, imgsz=args.imgsz)
