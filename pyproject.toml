[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wskit"
version = "0.1.0"
description = "Building blocks for HTTP and WebSocket servers: permessage-deflate streams, frame handling, connection events, an event loop and small helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["websocket", "http", "permessage-deflate", "event-loop", "getopt"]
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
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wskit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
