[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "framepost"
version = "0.1.0"
description = "Post-processing stages for YUV420 camera frames: negation, motion detection, neural-network result handling and piecewise linear curves"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "camera",
    "yuv420",
    "motion-detection",
    "object-detection",
    "segmentation",
    "pose-estimation",
    "post-processing",
    "piecewise-linear",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: Capture :: Digital Camera",
    "Topic :: Scientific/Engineering :: Image Processing",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["framepost"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
