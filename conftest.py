import os
import sys

# Widgets and images are created without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# pynput has no keyboard backend without an X server
if sys.platform.startswith("linux") and not os.environ.get("DISPLAY"):
  os.environ.setdefault("PYNPUT_BACKEND", "dummy")
