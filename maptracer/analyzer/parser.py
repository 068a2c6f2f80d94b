"""Tree-sitter parser for Java sources."""
from tree_sitter import Language, Parser, Tree
import tree_sitter_java as tsjava


class LanguageParser:
    """Java parser using tree-sitter v0.22+ API."""

    def __init__(self, language: str = 'java'):
        """Initialize parser for given language.

        Args:
            language: Currently only 'java'

        Raises:
            ValueError: If language is not supported
        """
        self.language = language
        self.parser = self._create_parser()

    def _create_parser(self) -> Parser:
        """Factory method using the Parser(Language(capsule)) API.

        Returns:
            Configured Parser instance

        Raises:
            ValueError: If language is not supported
        """
        if self.language == 'java':
            lang = Language(tsjava.language())
        else:
            raise ValueError(f"Unsupported language: {self.language}")

        return Parser(lang)

    def parse_source(self, source_code: bytes) -> Tree:
        """Parse in-memory source bytes (syntax errors become ERROR nodes)."""
        return self.parser.parse(source_code)
