# Configuration file for the Sphinx documentation builder.
#
# This file configures Sphinx documentation generation for the patch2graph package:
# autodoc with NumPy style docstrings, cross-references (intersphinx) and the
# PyData Sphinx Theme.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Path setup --------------------------------------------------------------
# Add the project root to Python path so Sphinx can import the package
import os
import sys

sys.path.insert(0, os.path.abspath("../.."))

# -- Project information -----------------------------------------------------

project = "patch2graph"
copyright = "2026, patch2graph developers"
author = "patch2graph developers"
release = "0.1.0"
version = "0.1.0"

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",          # Automatic documentation from docstrings
    "sphinx.ext.autosummary",      # Generate summary tables for modules/classes
    "sphinx.ext.napoleon",         # Support for NumPy style docstrings
    "sphinx.ext.viewcode",         # Add source code links to documentation
    "sphinx.ext.intersphinx",      # Cross-references to other projects
    "sphinx_autodoc_typehints",    # Type hints in documentation
]

templates_path = ["_templates"]
exclude_patterns = ["_build"]
language = "en"

# -- Options for autodoc -----------------------------------------------------

autodoc_member_order = "bysource"        # Order members as they appear in source
autodoc_typehints = "description"        # Include type hints in parameter descriptions
autoclass_content = "both"               # Include both class and __init__ docstrings
add_module_names = False                 # Don't show module names in function signatures

# -- Options for HTML output -------------------------------------------------

html_theme = "pydata_sphinx_theme"
html_title = "patch2graph - Patch Connectivity Networks"
html_theme_options = {
    "show_toc_level": 2,
    "navigation_with_keys": True,
    "footer_start": ["copyright"],
    "footer_end": ["sphinx-version", "theme-version"],
}
html_last_updated_fmt = "%b %d, %Y"

# -- Intersphinx configuration -----------------------------------------------

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable/", None),
    "pandas": ("https://pandas.pydata.org/pandas-docs/stable/", None),
    "geopandas": ("https://geopandas.org/en/stable/", None),
    "shapely": ("https://shapely.readthedocs.io/en/stable/", None),
    "pyproj": ("https://pyproj4.github.io/pyproj/stable/", None),
    "networkx": ("https://networkx.org/documentation/stable/", None),
}
intersphinx_timeout = 10

master_doc = "index"
