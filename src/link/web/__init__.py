"""Link Web - HTTP surface for the profile engine."""
