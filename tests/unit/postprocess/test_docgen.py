"""Unit tests for the markdown documentation generator."""

from pathlib import Path

import pytest

from solbuild.build.artifact_set import ArtifactSet
from solbuild.build.models import BuildArtifact
from solbuild.compilers.models import ContractArtifact
from solbuild.compilers.resolver import SourceUnit
from solbuild.config.project_config import PostProcessorConfig
from solbuild.postprocess.base import ProcessorContext
from solbuild.postprocess.docgen import DocumentationGenerator, render_contract

TOKEN_ABI = [
    {
        "type": "function",
        "name": "transfer",
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "Transfer",
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]

TOKEN_DEVDOC = {
    "title": "Simple token",
    "methods": {
        "transfer(address,uint256)": {
            "details": "Moves tokens",
            "params": {"to": "Recipient", "amount": "Amount in wei"},
        }
    },
}

TOKEN_USERDOC = {"notice": "A token for tests", "methods": {"balanceOf(address)": {"notice": "Balance lookup"}}}


def make_artifacts(*identifiers: str) -> ArtifactSet:
    artifacts = ArtifactSet()
    for identifier in identifiers:
        name = Path(identifier).stem
        contract = ContractArtifact(name, identifier, TOKEN_ABI, b"\x60", devdoc=TOKEN_DEVDOC, userdoc=TOKEN_USERDOC)
        artifacts.add(BuildArtifact(SourceUnit(identifier), "0.8.2", (contract,)))
    return artifacts


def make_generator(root: Path, exclude: tuple[str, ...] = (), clear: bool = False) -> DocumentationGenerator:
    return DocumentationGenerator(PostProcessorConfig("docgen", True, root / "docs", 30), exclude, clear)


class TestRenderContract:
    def test_page_sections(self) -> None:
        contract = ContractArtifact("Token", "contracts/Token.sol", TOKEN_ABI, b"", devdoc=TOKEN_DEVDOC, userdoc=TOKEN_USERDOC)
        page = render_contract(contract)

        assert page.startswith("# Token\n")
        assert "**Simple token**" in page
        assert "A token for tests" in page
        assert "## Functions" in page
        assert "## Events" in page
        assert "## Errors" not in page
        assert "### balanceOf (view)" in page
        assert "transfer(address,uint256)" in page
        assert "| to | address | Recipient |" in page
        assert "Balance lookup" in page
        assert "_Moves tokens_" in page

    def test_functions_sorted_by_signature(self) -> None:
        page = render_contract(ContractArtifact("Token", "contracts/Token.sol", TOKEN_ABI, b""))
        assert page.index("balanceOf(address)") < page.index("transfer(address,uint256)")


class TestDocumentationGenerator:
    def test_writes_pages_and_index(self, make_project) -> None:
        config = make_project({})
        output = make_generator(config.root).run(
            ProcessorContext(config=config, artifacts=make_artifacts("contracts/Token.sol", "contracts/sub/Vault.sol"))
        )

        docs = config.root / "docs"
        assert (docs / "contracts/Token/Token.md").is_file()
        assert (docs / "contracts/sub/Vault/Vault.md").is_file()
        index = (docs / "index.md").read_text()
        assert "- [Token](contracts/Token/Token.md)" in index
        assert docs / "index.md" in output.files

    def test_exclude_patterns(self, make_project) -> None:
        """Units matching an exclude pattern get no page."""
        config = make_project({})
        generator = make_generator(config.root, exclude=("^contracts/interfaces", "^contracts/test"))
        generator.run(
            ProcessorContext(
                config=config,
                artifacts=make_artifacts("contracts/Token.sol", "contracts/interfaces/IToken.sol", "contracts/test/Mock.sol"),
            )
        )
        pages = sorted(p.relative_to(config.root / "docs").as_posix() for p in (config.root / "docs").rglob("*.md"))
        assert pages == ["contracts/Token/Token.md", "index.md"]

    def test_clear_removes_old_pages(self, make_project) -> None:
        config = make_project({})
        stale = config.root / "docs/contracts/Old/Old.md"
        stale.parent.mkdir(parents=True)
        stale.write_text("old")

        make_generator(config.root, clear=True).run(ProcessorContext(config=config, artifacts=make_artifacts("contracts/Token.sol")))
        assert not stale.exists()

    def test_stale_pages_removed_without_clear(self, make_project) -> None:
        """Pages of contracts that left the build disappear; other files stay."""
        config = make_project({})
        generator = make_generator(config.root)
        generator.run(ProcessorContext(config=config, artifacts=make_artifacts("contracts/Token.sol", "contracts/sub/Vault.sol")))
        notes = config.root / "docs/notes.txt"
        notes.write_text("keep me")

        output = generator.run(ProcessorContext(config=config, artifacts=make_artifacts("contracts/Token.sol")))

        docs = config.root / "docs"
        assert not (docs / "contracts/sub/Vault/Vault.md").exists()
        assert not (docs / "contracts/sub").exists()
        assert (docs / "contracts/Token/Token.md").is_file()
        assert "Vault" not in (docs / "index.md").read_text()
        assert notes.read_text() == "keep me"
        assert output.detail.endswith("1 stale removed")

    def test_invalid_pattern(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError, match="exclude pattern"):
            make_generator(tmp_path, exclude=("([",))
