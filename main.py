from __future__ import annotations

from fastmcp import FastMCP

from sdr_provision.providers.mcp import McpProvisionProvider

app: FastMCP = FastMCP(
    "SDR Provision",
    instructions="Plan and run builds of the SDR toolchain into an install prefix",
)

McpProvisionProvider.create(app)

if __name__ == "__main__":
    app.run()
