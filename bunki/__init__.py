"""Bunki static blog generator.

Bunki turns a folder of Markdown posts into a static site with Jinja2
templates. Builds are incremental: a persisted store of file fingerprints
lets each build re-render only the posts, tag pages and indexes affected by
what changed since the last successful build.

The main entry point is the CLI module, which provides commands for building
the site, watching it for changes and inspecting the build cache.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
