"""
Test suite for the Collage Variant Renderer.

Unit tests cover layout, templates, variant enumeration, compositing and
persistence; integration tests drive render jobs and the HTTP surface.
"""
