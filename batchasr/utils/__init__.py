"""日志、配置、并发、I/O 与指标等通用工具。"""
