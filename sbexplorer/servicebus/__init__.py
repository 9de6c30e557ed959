"""
Service Bus client package.

Management (Atom/XML REST) and data-plane (AMQP) clients behind a single
facade, ``sbexplorer.servicebus.client.ServiceBusExplorerClient``.
"""
