"""Provider-neutral chat request model and the driver registry."""
