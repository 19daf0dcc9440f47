[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "u2fhid"
version = "0.1.0"
description = "U2F/CTAP1 security key communication over HID: packet framing, APDUs, transactions and a register/sign state machine"
requires-python = ">=3.10"
dependencies = []
keywords = ["u2f", "fido", "ctap1", "hid", "security-key", "authenticator"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security",
    "Topic :: System :: Hardware :: Universal Serial Bus (USB) :: Human Interface Device (HID)",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["u2fhid"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
