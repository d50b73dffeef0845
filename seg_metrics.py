import argparse
import json
from pathlib import Path

from ultralytics import YOLO

# --- Configuration ---
DATA_CONFIG = Path("data/data.yaml")
CUSTOM_WEIGHTS = Path("models/segmenter/photo_seg_run/weights/best.pt")
FALLBACK_MODEL = "yolov8n-seg.pt"

METRICS_DIR = Path("metrics")


def summarize(results_dict: dict, model_path: str) -> dict:
    """
    Pick the box and mask mAP values out of an Ultralytics results_dict.
    """
    def metric(key: str):
        value = results_dict.get(key)
        return None if value is None else round(float(value), 4)

    return {
        "model_used": model_path,
        "box": {
            "mAP@50": metric("metrics/mAP50(B)"),
            "mAP@50-95": metric("metrics/mAP50-95(B)"),
        },
        # The mask metrics matter most: the live scanner fits its rectangle to the mask
        "mask": {
            "mAP@50": metric("metrics/mAP50(M)"),
            "mAP@50-95": metric("metrics/mAP50-95(M)"),
        },
    }


def calculate_segmentation_metrics(weights: Path = CUSTOM_WEIGHTS, data: Path = DATA_CONFIG,
                                   imgsz: int = 640) -> dict:
    """
    Validates the segmenter and saves box/mask mAP to JSON.
    """

    print("--- Running YOLO-seg Validation ---")

    if weights.is_file():
        model_path = str(weights)
    else:
        model_path = FALLBACK_MODEL
        print(f"Warning: Using fallback model {model_path} as custom weights not found.")

    model = YOLO(model_path)

    # iou here is the NMS threshold, not the one used for mAP
    results = model.val(
        data=str(data),
        imgsz=imgsz,
        split='val',
        save_json=False,
        conf=0.25,
        iou=0.7,
    )

    metrics = summarize(results.results_dict, model_path)

    METRICS_DIR.mkdir(parents=True, exist_ok=True)
    metrics_path = METRICS_DIR / "photo_seg_metrics.json"
    with open(metrics_path, 'w') as f:
        json.dump(metrics, f, indent=4)

    print(f"\nSegmentation Metrics Saved to: {metrics_path}")
    print(json.dumps(metrics, indent=4))

    return metrics


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Validate the photo segmenter")
    parser.add_argument("--weights", type=Path, default=CUSTOM_WEIGHTS)
    parser.add_argument("--data", type=Path, default=DATA_CONFIG)
    parser.add_argument("--imgsz", type=int, default=640)
    args = parser.parse_args()

    calculate_segmentation_metrics(args.weights, args.data, args.imgsz)
