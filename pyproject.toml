[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "busmesh"
version = "0.1.0"
description = "Multi-master bus networking: strategy links, packet switches and routers, LoRa and TCP transports"
requires-python = ">=3.10"
dependencies = []
keywords = ["bus", "network", "router", "switch", "lora", "tcp", "multi-master"]
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
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["busmesh"]

[tool.pytest.ini_options]
addopts = "-ra"
