"""ACI artifact builder.

Builds a tiny container image on demand: a Go countdown program compiled
with `go build` and packaged with `actool build`. Each call is a fresh
build in its own temporary directory, which is removed on every exit
path, so concurrent builds never share files.
"""

import json
import logging
import shutil
import subprocess
import tempfile
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MANIFEST = {
    "acKind": "ImageManifest",
    "acVersion": "0.5.1+git",
    "name": "testprog",
    "app": {"exec": ["/prog"], "user": "0", "group": "0"},
}

TEST_PROG_SRC = """
package main

import (
	"fmt"
	"time"
)

func main() {
	for i := 3; i > 0; i -= 1 {
		fmt.Println(i)
		time.Sleep(time.Second)
	}
	fmt.Println("BANG!")
}
"""

ACI_FILENAME = "prog-build.aci"


class BuildError(Exception):
    """Artifact build failure."""


class AciBuilder:
    """Builds the test ACI using external `go` and `actool` binaries."""

    def __init__(
        self,
        go_binary: str = "go",
        actool_binary: str = "actool",
        timeout: int = 600,
    ):
        self.go_binary = go_binary
        self.actool_binary = actool_binary
        self.timeout = timeout

    def __call__(self) -> bytes:
        return self.build()

    def build(self) -> bytes:
        """Build the ACI and return its bytes.

        Raises:
            BuildError: If any step fails
        """
        with tempfile.TemporaryDirectory(prefix="aci-build-") as tmp:
            work_dir = Path(tmp)
            aci_dir = work_dir / "ACI"
            try:
                self._create_tree(aci_dir)
            except OSError as e:
                raise BuildError(f"failed to build ACI tree: {e}") from e

            try:
                self._build_prog(aci_dir)
            except BuildError as e:
                raise BuildError(f"failed to build test program: {e}") from e

            out_file = work_dir / ACI_FILENAME
            try:
                self._build_aci(aci_dir, out_file)
            except BuildError as e:
                raise BuildError(f"failed to build ACI: {e}") from e

            try:
                data = out_file.read_bytes()
            except OSError as e:
                raise BuildError(f"failed to read ACI to memory: {e}") from e

        logger.info("Built %s (%d bytes)", ACI_FILENAME, len(data))
        return data

    def _create_tree(self, aci_dir: Path) -> None:
        rootfs = aci_dir / "rootfs"
        rootfs.mkdir(parents=True)
        (aci_dir / "manifest").write_text(json.dumps(MANIFEST, separators=(",", ":")))
        (rootfs / "prog.go").write_text(TEST_PROG_SRC)

    def _build_prog(self, aci_dir: Path) -> None:
        self._run(self.go_binary, ["build", "-o", "prog", "./prog.go"], cwd=aci_dir / "rootfs")

    def _build_aci(self, aci_dir: Path, out_file: Path) -> None:
        # Stamp makes every image unique
        stamp = datetime.now(timezone.utc).isoformat()
        try:
            (aci_dir / "rootfs" / "stamp").write_text(stamp)
        except OSError as e:
            raise BuildError(f"failed to write a stamp: {e}") from e

        self._run(self.actool_binary, ["build", str(aci_dir), str(out_file)])

    def _run(self, tool: str, args: list[str], cwd: Path | None = None) -> None:
        """Run an external tool, raising BuildError on any failure."""
        name = Path(tool).name
        path = shutil.which(tool)
        if path is None:
            raise BuildError(f"failed to find `{name}`")

        cmd = [path] + args
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            raise BuildError(f"`{name} {args[0]}` timed out after {self.timeout}s")
        except OSError as e:
            raise BuildError(f"failed to execute `{name} {args[0]}`: {e}") from e

        if result.returncode != 0:
            raise BuildError(
                f"failed to execute `{name} {args[0]}`: exit status {result.returncode}\n"
                f"stdout:\n{result.stdout}\n\nstderr:\n{result.stderr}"
            )


def build_aci() -> bytes:
    """Build the test ACI with default tool names."""
    return AciBuilder().build()
