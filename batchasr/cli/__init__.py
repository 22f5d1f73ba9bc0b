"""命令行入口包。"""
