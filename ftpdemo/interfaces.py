from zope.interface import Attribute, Interface


class IControlConnection(Interface):
    """The control connection as seen by the command dispatcher."""

    identity = Attribute("Opaque handle unique per control connection")

    def write_line(line):
        """Send one reply line to the client; the line terminator is added"""

    def close():
        """Close the control connection once pending replies are sent"""

    def local_host():
        """Return the dotted IPv4 address the connection was accepted on"""


class IDirectoryLister(Interface):
    def from_settings(settings):
        """Return an instance of the class for the given settings"""

    def list_directory(path):
        """Return a Deferred firing with the ``ls -l`` style listing of the
        directory ``path`` as bytes, the first line being a summary line"""
