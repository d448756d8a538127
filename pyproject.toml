[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rtmpkit"
version = "0.1.0"
description = "RTMP message codec, AMF0 command bodies and server-side stream state handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["rtmp", "amf0", "streaming", "video", "live"]
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
    "Topic :: Multimedia :: Video",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rtmpkit"]

[tool.pytest.ini_options]
addopts = "-ra"
