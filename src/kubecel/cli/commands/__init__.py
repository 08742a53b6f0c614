"""Click commands registered on the ``kubecel`` group."""
