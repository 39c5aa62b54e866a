"""CRM backend: segmentation, campaigns and simulated delivery."""
