"""
capture_eye.py
==============

GUIDED EYE CAPTURE
------------------
Opens the camera, guides the user with voice prompts until the eye is
aligned, and saves one 160x160 eyelid crop for the anemia screening
pipeline.

Keys:
  m / SPACE  manual capture
  r          restart the session
  q / ESC    quit
"""

import argparse
import json
import logging
import os
import sys
import threading
from datetime import datetime

import cv2
import numpy as np

from eyecapture.capture.errors import FrameCaptureFailure
from eyecapture.capture.frame_source import camera_available
from eyecapture.capture.overlay import draw_guide, draw_status, render_report, COLOR_WARN
from eyecapture.capture.session import CaptureSession, SessionStatus
from eyecapture.config import CaptureConfig

WINDOW = "Eye Capture"


# -------------------------------------------------
# Output
# -------------------------------------------------

def make_session_dir(base):
    session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = os.path.join(base, f"session_{session_id}")
    os.makedirs(os.path.join(path, "images"), exist_ok=True)
    os.makedirs(os.path.join(path, "meta"), exist_ok=True)
    return path


def save_capture(session_dir, image):
    stem = f"eye_{image.provenance}_{datetime.fromtimestamp(image.timestamp).strftime('%H%M%S')}"
    img_path = image.save(os.path.join(session_dir, "images", f"{stem}.jpg"))

    meta_path = os.path.join(session_dir, "meta", f"{stem}.json")
    with open(meta_path, "w") as f:
        json.dump({
            "timestamp": image.timestamp,
            "provenance": image.provenance,
            "size": image.size,
            "origin": list(image.origin),
            **image.metadata,
        }, f, indent=2)

    print(f"📸 Image saved: {img_path}")
    return img_path


# -------------------------------------------------
# CLI
# -------------------------------------------------

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="AI-guided eye image capture")
    p.add_argument("--camera", type=int, default=None, help="camera index")
    p.add_argument("--manual", action="store_true", help="plain camera, no landmark guidance")
    p.add_argument("--config", default=None, help="YAML config file")
    p.add_argument("--model", default=None, help="face_landmarker.task path")
    p.add_argument("--output", default="captures", help="base output directory")
    p.add_argument("--no-voice", action="store_true", help="print instructions instead of speaking")
    p.add_argument("--strict-photometry", action="store_true",
                   help="also require lighting, focus and white balance before auto-capture")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args(argv)


def build_config(args):
    config = CaptureConfig.from_yaml(args.config) if args.config else CaptureConfig()
    if args.camera is not None:
        config.camera_index = args.camera
    if args.manual:
        config.with_landmark_guidance = False
    if args.model:
        config.model_path = args.model
    if args.no_voice:
        config.voice_enabled = False
    if args.strict_photometry:
        config.strict_photometry = True
    return config


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = build_config(args)

    if not camera_available(config.camera_index):
        print(f"❌ Camera {config.camera_index} not found. Connect a camera, pick another with --camera, or upload an eye photo instead.")
        return 1

    session_dir = make_session_dir(args.output)
    print(f"🟢 Session started: {os.path.basename(session_dir)}")

    done = threading.Event()
    saved = []

    def on_capture(image):
        saved.append(save_capture(session_dir, image))
        if image.provenance == "ai":
            done.set()

    def on_error(err):
        print(f"⚠️  {type(err).__name__}: {err}")
        print(f"   ➜ {err.recovery}")

    session = CaptureSession(config=config, on_capture=on_capture, on_error=on_error)

    cv2.namedWindow(WINDOW, cv2.WINDOW_NORMAL)
    blank = np.zeros((config.frame_height, config.frame_width, 3), np.uint8)

    with session:
        while True:
            report = session.last_report
            status = session.status

            if report is not None:
                canvas = report.frame.image.copy()
                instruction = session.speech.last_instruction if session.speech else None
                render_report(canvas, report, status is SessionStatus.MANUAL, instruction)
            else:
                canvas = blank.copy()
                msg = "Starting camera..." if status is SessionStatus.STARTING else status.value
                draw_status(canvas, msg)
                if status is SessionStatus.MANUAL:
                    draw_guide(canvas, (config.frame_width / 2, config.frame_height / 2),
                               "MANUAL MODE - POSITION EYE", COLOR_WARN)

            if status is SessionStatus.ERROR and session.error is not None:
                draw_status(canvas, f"{session.error.recovery} (r = retry)", COLOR_WARN)

            cv2.imshow(WINDOW, canvas)
            key = cv2.waitKey(30) & 0xFF

            if key in (27, ord("q")) or done.is_set():
                break
            if key in (ord("m"), ord(" ")):
                try:
                    session.capture_manual()
                except FrameCaptureFailure as e:
                    on_error(e)
            elif key == ord("r"):
                print("🔄 Restarting session")
                session.restart()

    cv2.destroyAllWindows()

    if not saved:
        print("ℹ No image captured")
        return 2
    print("[DONE]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
