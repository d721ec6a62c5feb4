from fastmcp import FastMCP

from sdr_provision.providers.base import ProvisionProvider


class McpProvisionProvider:
    def __init__(self, mcp_instance: FastMCP, provision_provider: ProvisionProvider):
        self._mcp_instance = mcp_instance
        self._provision_provider = provision_provider
        self.__init_tools()

    def __init_tools(self):
        t = self._mcp_instance.tool
        p = self._provision_provider

        # ── Catalog ────────────────────────────
        t(p.list_steps)
        t(p.plan_pipeline)

        # ── Bundles / Environment ──────────────
        t(p.read_bundle)
        t(p.preview_environment)

        # ── Execution ──────────────────────────
        t(p.run_pipeline)

    @property
    def app(self) -> FastMCP:
        return self._mcp_instance

    @classmethod
    def create(cls, mcp_instance: FastMCP) -> "McpProvisionProvider":
        return cls(mcp_instance, ProvisionProvider())
