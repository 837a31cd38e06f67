"""
API 層（Session Gateway）

只負責：
- 把 HTTP 請求轉成 Manager 呼叫
- 把業務異常轉成 HTTP 錯誤
- 在 commit 之後發佈變更通知
業務邏輯一律在 core/ 裡
"""
