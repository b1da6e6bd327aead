[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "turbonet"
version = "0.1.0"
description = "Length-prefixed binary packets over TCP: a threaded server, client and request-forwarding gateway"
requires-python = ">=3.10"
dependencies = []
keywords = ["tcp", "protocol", "packets", "server", "client", "gateway"]
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

[project.scripts]
turbonet-gateway = "turbonet.gateway:main"
turbonet-echo-server = "turbonet.echo_server:main"
turbonet-echo-client = "turbonet.echo_client:main"

[tool.hatch.build.targets.wheel]
packages = ["turbonet"]

[tool.pytest.ini_options]
addopts = "-ra"
