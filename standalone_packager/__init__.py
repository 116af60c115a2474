"""standalone-packager.

A small build utility that turns a generic app shell into a standalone app by
injecting a downloaded program archive (plus its name and screenshot icon) for
the duration of one build, and reverting the shell afterwards.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
