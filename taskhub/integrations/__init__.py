"""taskhub.integrations — External service gateway modules.

All outbound HTTP calls to collaborating services must go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Current gateways:
  directory_gateway.DirectoryGateway — project / company / etablissement
                                        existence checks
"""
