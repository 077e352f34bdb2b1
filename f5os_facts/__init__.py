"""f5os-facts: collect F5OS version facts over several channels.

Reads the same facts (OS version, service version, product) from one
F5OS appliance over independent channels, normalizes them, and reports
each channel's success or failure. A failing channel never hides the
others.

Channels::

    rest     RESTCONF over HTTPS (admin)
    cli      F5OS CLI over SSH (admin)
    script   f5sh bash script copied and run over SSH (root)

Subcommands::

    f5os-facts collect [hostname ...]   # collect and print report
    f5os-facts check [hostname ...]     # also fail on disagreement
    f5os-facts channels                 # list channels
"""

__version__ = "0.1.0"
