"""批量转写核心：输入枚举、共享推理上下文、推理运行时与任务调度。"""
