"""Bridge Bitbucket Server pull requests to Xcode Server bots."""

__version__ = "0.3.0"
